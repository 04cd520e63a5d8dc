"""Itinerary generation and recovery service for the Turistik app."""

__version__ = "0.1.0"
