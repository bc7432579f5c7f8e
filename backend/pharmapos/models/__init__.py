from .tenancy import Branch
from .inventory import Product, ProductBatch

__all__ = [
    'Branch',
    'Product', 'ProductBatch',
]
