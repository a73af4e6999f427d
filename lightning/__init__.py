"""
Remote collaborators: the ledger GraphQL client and the LNURL-pay client.
"""
