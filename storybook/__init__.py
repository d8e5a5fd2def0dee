"""
Children's storybook generator: story text, illustrations and printable PDFs.
"""

__version__ = "0.1.0"
