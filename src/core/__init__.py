"""Core domain package for forumcast.

Core contains rule editing, matching, composition and dispatch logic without
any vendor or storage-specific code, keeping the business logic portable.
"""
