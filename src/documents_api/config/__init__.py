"""
Configuration management for the Documents API.

Contains the Pydantic settings shared by the storage engine, the HTTP app and the CLI.
"""
