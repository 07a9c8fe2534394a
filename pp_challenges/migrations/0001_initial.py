import django.core.validators
from django.db import migrations, models

import pp_challenges.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Challenge',
            fields=[
                ('id', models.CharField(default=pp_challenges.models.new_challenge_id, editable=False, max_length=32, primary_key=True, serialize=False)),
                ('title', models.CharField(max_length=100)),
                ('description', models.TextField(max_length=500, validators=[django.core.validators.MaxLengthValidator(500)])),
                ('owner_id', models.CharField(db_index=True, max_length=64)),
                ('game_id', models.CharField(db_index=True, max_length=32)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('active', 'Active'), ('live', 'Live'), ('finished', 'Finished'), ('cancelled', 'Cancelled')], db_index=True, default='pending', max_length=16)),
                ('member_ids', models.JSONField(blank=True, default=list)),
                ('invited_user_ids', models.JSONField(blank=True, default=list)),
                ('ticket_ids', models.JSONField(blank=True, default=dict)),
                ('max_members', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(2), django.core.validators.MaxValueValidator(50)])),
                ('game_start_time', models.DateTimeField(blank=True, null=True)),
                ('version', models.PositiveIntegerField(default=1)),
                ('created', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['-created'],
            },
        ),
        migrations.AddIndex(
            model_name='challenge',
            index=models.Index(fields=['status', '-created'], name='ch_status_created_idx'),
        ),
        migrations.AddIndex(
            model_name='challenge',
            index=models.Index(fields=['game_id', '-created'], name='ch_game_created_idx'),
        ),
    ]
