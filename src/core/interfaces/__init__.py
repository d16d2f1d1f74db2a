"""Contratos que el Core espera de la UI.

La autenticación, las notificaciones y la navegación se inyectan como
`Protocol`; los servicios nunca importan la CLI.
"""
