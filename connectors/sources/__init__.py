"""One module per protocol family"""
