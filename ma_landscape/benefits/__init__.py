"""Benefit extraction from Summary of Benefits PDFs"""
