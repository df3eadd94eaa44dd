"""
Stylus token deployer - deploy, activate, initialize and register ERC20
tokens on Arbitrum Stylus by driving cargo-stylus and cast.
"""

__version__ = "1.0.0"
