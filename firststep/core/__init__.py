"""Config, event taxonomy, models and event stores."""
