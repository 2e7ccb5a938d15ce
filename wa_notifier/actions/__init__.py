"""Action layer: rendering and sending notification emails."""
