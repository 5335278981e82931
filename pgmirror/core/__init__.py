"""Core configuration, domain types and exceptions"""
