# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Integration tests for cache, controllers, bindings and file storage.

These tests exercise several components together over a real storage file.
"""
