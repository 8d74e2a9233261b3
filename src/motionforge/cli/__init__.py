"""MotionForge command line interface."""
