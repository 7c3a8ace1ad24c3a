"""
Core upload logic.

This module is framework-agnostic - it doesn't import FastAPI, boto3, httpx
or any infrastructure concerns. This separation means we can test the
protocol driver against scripted fakes and swap transports if needed.
"""
