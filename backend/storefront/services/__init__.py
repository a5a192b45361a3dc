"""Business services: order lifecycle, collaborators and notifications."""
