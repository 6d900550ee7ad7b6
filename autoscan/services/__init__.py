"""Business logic services: screening, risk gate, trade execution, facade."""
