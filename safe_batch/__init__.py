"""
Safe Batch — CSV to Safe Transaction Builder batch files.

Turns an ``address,amount`` list into a single batch document that the Safe
Transaction Builder can import, paying each recipient either in the chain's
native currency or in an ERC-20 token via ``transfer(address,uint256)``.
"""

__version__ = "0.1.0"
__author__ = "Safe Batch contributors"
