"""Seed database with stage catalogs, their mapping and demo users."""
from labflow.database import SessionLocal
from labflow.models import KanbanStage, ProductionStage, ProductionStageMaterial, StageMapping, User

KANBAN_STAGES = [
    {'id': 'pending', 'name': 'Criado', 'color': '#3b82f6', 'order': 1, 'triggers_production': False},
    {'id': 'in_progress', 'name': 'Em Produção', 'color': '#f59e0b', 'order': 2, 'triggers_production': True},
    {'id': 'quality_check', 'name': 'Controle de Qualidade', 'color': '#8b5cf6', 'order': 3, 'triggers_production': True},
    {'id': 'completed', 'name': 'Finalizado', 'color': '#10b981', 'order': 4, 'triggers_production': False},
]

PRODUCTION_STAGES = [
    ('iniciado', 'Iniciado', []),
    ('modelos', 'Modelos', []),
    ('montagem', 'Montagem', ['Acrilico']),
    ('desenho', 'Desenho', ['CAD/CAM']),
    ('fresagem_impressao', 'Fresagem/Impressão', ['Zirconia', 'Dissilicato', 'PMMA', 'Metal', 'Impressão']),
    ('sinterizacao', 'Sinterização', ['Zirconia']),
    ('cristalizacao', 'Cristalização', ['Dissilicato']),
    ('acabamento', 'Acabamento', []),
    ('qc', 'Controle de Qualidade', []),
    ('finalizado', 'Finalizado', []),
]

STAGE_MAPPINGS = {
    'in_progress': 'iniciado',
    'quality_check': 'qc',
}

USERS = [
    {'email': 'admin@lab.local', 'first_name': 'Admin', 'last_name': 'Lab', 'role': 'administrator'},
    {'email': 'carlos@lab.local', 'first_name': 'Carlos', 'last_name': 'Silva', 'role': 'tecnico'},
    {'email': 'marina@lab.local', 'first_name': 'Marina', 'last_name': 'Costa', 'role': 'atendente'},
    {'email': 'paula@clinica.local', 'first_name': 'Paula', 'last_name': 'Mendes', 'role': 'user', 'company': 'Clínica Sorriso'},
]


def seed():
    """Insert catalogs and users that are missing. Existing rows are left as they are."""
    db = SessionLocal()

    try:
        for data in KANBAN_STAGES:
            if db.query(KanbanStage).filter(KanbanStage.id == data['id']).first():
                continue
            db.add(KanbanStage(
                id=data['id'],
                name=data['name'],
                color=data['color'],
                sort_order=data['order'],
                triggers_production=data['triggers_production'],
            ))

        for order_index, (stage_id, name, materials) in enumerate(PRODUCTION_STAGES, start=1):
            if db.query(ProductionStage).filter(ProductionStage.id == stage_id).first():
                continue
            db.add(ProductionStage(
                id=stage_id,
                name=name,
                order_index=order_index,
                materials=[ProductionStageMaterial(stage_id=stage_id, material=m) for m in materials],
            ))
        db.flush()

        for kanban_stage_id, production_stage_id in STAGE_MAPPINGS.items():
            if db.query(StageMapping).filter(StageMapping.kanban_stage_id == kanban_stage_id).first():
                continue
            db.add(StageMapping(kanban_stage_id=kanban_stage_id, production_stage_id=production_stage_id))

        for data in USERS:
            if db.query(User).filter(User.email == data['email']).first():
                continue
            db.add(User(is_active=True, **data))

        db.commit()
        print("✅ Database seeded successfully!")
        print(f"  {len(KANBAN_STAGES)} Kanban stages, {len(PRODUCTION_STAGES)} production stages")
        print(f"  {len(STAGE_MAPPINGS)} stage mappings, {len(USERS)} users")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
