"""Service layer — business logic behind the register blueprints."""
