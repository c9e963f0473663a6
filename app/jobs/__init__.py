"""
Jobs package - background maintenance and scheduling
"""
