"""Application layer: allocation coordinator and DTOs"""
