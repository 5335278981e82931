"""Shared helpers: logging, retry, error tracking and time utilities"""
