"""Capture private keys pushed into a fake SSH agent during an interactive session"""
