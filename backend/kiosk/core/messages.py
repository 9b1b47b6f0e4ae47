"""Operator-facing texts (screen and speech), in the kiosk's language."""

GENERIC_ERROR = "Error al procesar la solicitud"
STORE_FAILED = "Error en la base de datos local"

# Issuance
STILL_LOADING = "La aplicación aún no ha terminado de cargar. Por favor espere..."
STILL_LOADING_SPEECH = "Aún no estoy lista. Por favor espere un momento."
ENTER_CODE = "Por favor ingrese un código de usuario"
ENTER_CODE_SPEECH = "Por favor ingrese un código"
NO_PERIOD = "No hay un período activo"
NO_PERIOD_SPEECH = "No hay período activo, Sincronice..."
NO_MEAL = "No hay una comida activa"
NO_ROSTER = "No hay usuarios en la nómina"
NO_ROSTER_SPEECH = "No hay usuarios en la nómina, Sincronice..."
INVALID_CODE = "Error en el código"
INCOMPLETE_TICKET = "Datos incompletos para ticket"
DUPLICATE_TICKET = "El ticket ya existe"
SAVE_FAILED = "Error al guardar el pedido"
ISSUED = "Pedido exitoso"
ALREADY_ISSUED = "Ya separó {meal}"

# Reference data
PERIOD_LOAD_FAILED = "No se pudo cargar el período"
ROSTER_LOAD_FAILED = "No se pudo cargar la nómina de usuarios"
INITIAL_LOAD_FAILED = "Error al cargar los datos iniciales"

# Synchronization
NO_CONNECTION = "No hay conexión a internet"
REMOTE_REJECTED = "El servidor rechazó la solicitud"
SYNC_PREPARING = "Preparando sincronización..."
SYNC_LOCAL_DATA = "Obteniendo datos locales..."
SYNC_LOCAL_TICKETS = "Obteniendo tickets locales..."
SYNC_TOTAL = "Obteniendo total de tickets..."
SYNC_DOWNLOADING = "Descargando datos ({page}/{pages} páginas)..."
SYNC_PROCESSING_START = "Procesando datos..."
SYNC_PROCESSING = "Procesando datos ({current}/{total})..."
SYNC_UPLOAD_START = "Actualizando lista de tickets..."
SYNC_UPLOADING = "Sincronizando cambios ({current}/{total})..."
SYNC_NOTHING_PENDING = "No hay cambios pendientes por sincronizar"
SYNC_TOTAL_FAILED = "Error al obtener el total de tickets del servidor"
SYNC_NO_PERIOD = "No se puede sincronizar: falta período o comida actual"
SYNC_DONE = "Sincronización completada exitosamente"
SYNC_DONE_SPEECH = "Sincronización completada"
SYNC_PARTIAL = "Sincronización completada con {failed} errores"
SYNC_INCOMPLETE = "Sincronización incompleta: se descargaron {downloaded} de {expected} tickets"
SYNC_FAILED_SPEECH = "Error al sincronizar"
SYNC_ERROR = "Error: {detail}"
SYNC_CANCELLED = "Sincronización cancelada"

# Backup
BACKUP_SAVED = "Respaldo guardado en carpeta seleccionada"
BACKUP_DENIED = "Permiso denegado para guardar archivo"
BACKUP_FAILED = "Error al guardar el respaldo. {detail}"
BACKUP_SHARE_TITLE = "Respaldo de tickets sincronizados"
MEAL_NOT_FOUND = "Comida no encontrada"
