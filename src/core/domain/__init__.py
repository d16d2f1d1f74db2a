"""Modelos y errores del dominio.

Por qué:
- Aquí viven las estructuras de datos puras y estrictas (Pydantic v2).
- El dominio no conoce httpx ni la CLI: solo outcomes, políticas y paginación.
"""
