# facturacion/services/sri/__init__.py
"""
Servicios relacionados con SRI:

- clave_acceso: generación y validación de la clave de acceso (49 dígitos).
- signer: firma electrónica XAdES-BES con certificado .p12.
- client: cliente SOAP para Recepción/Autorización.
- workflow: orquestación clave -> firma -> recepción -> autorización.
- validator: revisión estructural del XML antes de firmar.
- config / exceptions: parámetros SRI_* y errores del módulo.
"""
