import decimal


def set_decimal_context():
    """
    Make float mixing and invalid Decimal operations raise.

    Precision is left alone: amount conversions in `settlement.common.utils` run in their own local context.
    """
    decimal.DefaultContext.traps[decimal.FloatOperation] = True
    decimal.DefaultContext.traps[decimal.InvalidOperation] = True
    decimal.DefaultContext.traps[decimal.DivisionByZero] = True
    decimal.setcontext(decimal.DefaultContext)
