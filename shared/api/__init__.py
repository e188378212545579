"""HTTP helpers shared by the app views."""
