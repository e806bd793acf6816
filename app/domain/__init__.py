"""
Domain Package
==============
Entities, value objects and the exception hierarchy of the heating
controller. Nothing here performs I/O.
"""
