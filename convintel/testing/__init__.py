"""Test doubles for the inference layer."""
