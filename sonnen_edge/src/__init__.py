"""
Edge daemon package for sonnenBatterie energy accounting.

Reads power readings from a sonnenBatterie over its local REST API,
integrates them into cumulative and daily energy totals, tracks battery
cycle history, and persists the accumulated state locally.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""
