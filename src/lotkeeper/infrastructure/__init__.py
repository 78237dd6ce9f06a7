"""Infrastructure layer: state stores and messaging"""
