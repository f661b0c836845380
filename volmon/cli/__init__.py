"""Shared argparse helpers."""
