"""Document store schema: one table of JSONB documents plus change notification."""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'documents',
            'columns': [
                {'name': 'collection', 'type': 'TEXT', 'nullable': False},
                {'name': 'id', 'type': 'TEXT', 'nullable': False},
                {'name': 'body', 'type': 'JSONB', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'default': 'now()'}
            ],
            'primary_key': ['collection', 'id'],
            'indexes': [
                {
                    'name': 'idx_documents_body',
                    'using': 'gin',
                    'columns': ['body jsonb_path_ops']
                },
                {
                    'name': 'idx_documents_collection_created',
                    'columns': ['collection', 'created_at']
                }
            ]
        }
    ],
    'triggers': [
        {
            'name': 'documents_change_notify',
            'table': 'documents',
            'timing': 'AFTER',
            'event': 'INSERT OR UPDATE OR DELETE',
            'function_name': 'notify_document_change',
            'function_body': '''
                BEGIN
                    IF TG_OP = 'DELETE' THEN
                        PERFORM pg_notify('document_changes', json_build_object(
                            'op', 'delete',
                            'collection', OLD.collection,
                            'id', OLD.id
                        )::text);
                        RETURN OLD;
                    END IF;
                    PERFORM pg_notify('document_changes', json_build_object(
                        'op', lower(TG_OP),
                        'collection', NEW.collection,
                        'id', NEW.id
                    )::text);
                    RETURN NEW;
                END;
            '''
        }
    ],
    'migrations': []
}
