"""
GraphQL documents sent to the ledger.
"""

DEFAULT_WALLET_QUERY = """
query AccountDefaultWallet($username: Username!) {
  accountDefaultWallet(username: $username) {
    id
    walletCurrency
  }
}
"""

_PAYMENT_PAYLOAD = """
    status
    errors {
      message
      code
    }
    transaction {
      id
      settlementFee
    }
"""

INTRA_LEDGER_PAYMENT_SEND = """
mutation IntraLedgerPaymentSend($input: IntraLedgerPaymentSendInput!) {
  intraLedgerPaymentSend(input: $input) {%s  }
}
""" % _PAYMENT_PAYLOAD

LN_ADDRESS_PAYMENT_SEND = """
mutation LnAddressPaymentSend($input: LnAddressPaymentSendInput!) {
  lnAddressPaymentSend(input: $input) {%s  }
}
""" % _PAYMENT_PAYLOAD

LN_INVOICE_PAYMENT_SEND = """
mutation LnInvoicePaymentSend($input: LnInvoicePaymentInput!) {
  lnInvoicePaymentSend(input: $input) {%s  }
}
""" % _PAYMENT_PAYLOAD
