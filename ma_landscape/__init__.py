"""Medicare Advantage landscape -> static JSON dataset pipeline"""

__version__ = "0.1.0"
