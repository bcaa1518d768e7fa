"""Core primitives shared by services and blueprints."""
