"""Crawl engine services"""
