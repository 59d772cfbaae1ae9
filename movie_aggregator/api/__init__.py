"""HTTP control API"""
