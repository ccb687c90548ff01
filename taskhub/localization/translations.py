"""Translation catalogue for API error messages."""

TRANSLATIONS = {
    "en": {
        "errors.resource_not_found": "Resource not found",
        "errors.not_authenticated": "Not authenticated",
        "errors.permission_denied": "Permission denied",
        "errors.validation_error": "Validation error",
        "errors.resource_conflict": "Resource conflict",
        "tasks.not_found": "Task not found",
        "tasks.response_not_found": "Task response not found",
        "tasks.duplicate": "Such a task already exists (duplicate)",
        "tasks.finalized": "A completed task cannot be edited",
        "tasks.no_dealership_access": "You do not have access to this dealership",
        "tasks.no_task_access": "You do not have access to this task",
        "tasks.invalid_status": "Unsupported status: {status}",
        "tasks.invalid_transition": "Status transition not allowed: {edge}",
        "tasks.complete_for_all_forbidden": "Only managers can complete a task for all assignees",
        "tasks.complete_for_all_group_only": "complete_for_all is only available for group tasks",
        "tasks.proof_required": "Proof of completion must be uploaded for this task",
        "tasks.open_shift_required": "An open shift is required to complete this task",
        "tasks.not_pending_review": "Only responses awaiting review can be verified (current: {status})",
        "proofs.too_many_files": "Too many files: at most {limit} allowed",
        "proofs.batch_too_large": "Upload batch is too large: at most {limit} bytes allowed",
        "proofs.unsupported_type": "File {filename} does not match its declared type {mime}",
        "proofs.empty_file": "File {filename} is empty",
    },
    "ru": {
        "errors.resource_not_found": "Ресурс не найден",
        "errors.not_authenticated": "Требуется аутентификация",
        "errors.permission_denied": "Доступ запрещён",
        "errors.validation_error": "Ошибка валидации",
        "errors.resource_conflict": "Конфликт данных",
        "tasks.not_found": "Задача не найдена",
        "tasks.response_not_found": "Ответ на задачу не найден",
        "tasks.duplicate": "Такая задача уже существует (дубликат)",
        "tasks.finalized": "Нельзя редактировать выполненную задачу",
        "tasks.no_dealership_access": "У вас нет доступа к этому автосалону",
        "tasks.no_task_access": "У вас нет доступа к этой задаче",
        "tasks.invalid_status": "Недопустимый статус: {status}",
        "tasks.invalid_transition": "Недопустимый переход статуса: {edge}",
        "tasks.complete_for_all_forbidden": "Выполнить задачу за всех может только менеджер",
        "tasks.complete_for_all_group_only": "complete_for_all доступен только для групповых задач",
        "tasks.proof_required": "Для выполнения этой задачи необходимо загрузить доказательство",
        "tasks.open_shift_required": "Для выполнения задачи необходимо открыть смену",
        "tasks.not_pending_review": "Проверять можно только ответы на проверке (текущий статус: {status})",
        "proofs.too_many_files": "Слишком много файлов: не более {limit}",
        "proofs.batch_too_large": "Слишком большой объём загрузки: не более {limit} байт",
        "proofs.unsupported_type": "Файл {filename} не соответствует заявленному типу {mime}",
        "proofs.empty_file": "Файл {filename} пуст",
    },
}
