"""Disruption Hub - Action Hub workflow engine and token authorization"""
