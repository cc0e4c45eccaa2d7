"""Asyncio middleware for bursts of workers: direct messages and collectives over pluggable proxies."""

__version__ = "0.1.0"
__all__ = ["types", "chunk_store", "message_buffer", "proxies", "routing", "middleware"]