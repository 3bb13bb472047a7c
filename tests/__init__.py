"""Test package for resource_flow."""
