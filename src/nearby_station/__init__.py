"""Nearest-station lookup over a gRPC-Web or h2c station service."""

__version__ = "0.1.0"
