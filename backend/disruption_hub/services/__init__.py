"""Disruption Hub - Services"""
