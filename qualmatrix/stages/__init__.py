"""Analysis stages: speaker detection, guide extraction, prompt composition, validation."""
