'''
Liquidation bot for collateralized loans on a margin-lending ledger.
'''
__version__ = '0.1.0'
