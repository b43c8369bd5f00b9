"""Summary of Benefits source discovery"""
