"""
Catalog Module

Services live in their own modules (products, categories, engagement,
search); pricing is imported by the order and social modules, so this
package init stays import-free.
"""
