"""cloudbackup — append-only cloud backup with rotating integrity checks"""
__version__ = "1.0.0"
