"""
Package: presence
Description: Directory of users with a live connection.
"""
