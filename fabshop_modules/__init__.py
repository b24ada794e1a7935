"""
Fabshop Modules.

Domain modules over the fabshop kernel:

- budgets: quotes, their items and the quote workflow
- orders: budget conversion, order numbering, production status workflow
- tasks: tasks and time logs against orders
- invoicing: aggregation of billable orders into invoices
- reporting: read-only projection for dashboards and exports
"""
