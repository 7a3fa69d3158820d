"""
APT Airdrop — Batch APT reward distribution for the Aptos network.

Reads recipient addresses from a CSV file and sends the same amount of APT
to each of them from a single admin account, using the Aptos SDK's
transaction worker to sequence and submit the transfers.
"""

__version__ = "0.1.0"
__author__ = "APT Airdrop"
